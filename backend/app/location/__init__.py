"""
location — Device position and nearby safe places.

Sub-modules:
    models       — Position, SafePlace and place-search value types
    geolocation  — one-shot position requests with in-flight sharing
    safe_places  — per-category place search, merged into one set
"""
