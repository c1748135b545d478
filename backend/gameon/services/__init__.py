"""
Services Layer

Room slot business logic:
- Store, engine, access rules and views are pure (no database, no HTTP)
- RoomSlotService is the only place that loads, locks, persists and broadcasts rooms
- Nothing here depends on HTTP request/response objects
"""
