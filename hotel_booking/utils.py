import json


def parse_amenities(value):
    """
    Normalize a room's amenities into a list of unique, non-empty strings.

    Rooms written by different clients store amenities as a list, a JSON
    encoded list, or a comma separated string. The fallback chain is:
    structured value, JSON parse, comma split, empty list.
    """
    if value is None:
        return []

    if isinstance(value, (list, tuple, set, frozenset)):
        items = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        try:
            decoded = json.loads(text)
        except ValueError:
            decoded = None
        if isinstance(decoded, list):
            items = decoded
        else:
            items = text.split(',')
    else:
        return []

    amenities = []
    for item in items:
        if not isinstance(item, str):
            continue
        item = item.strip()
        if item and item not in amenities:
            amenities.append(item)
    return amenities


def format_currency(amount):
    return f"KES {amount:,}"
