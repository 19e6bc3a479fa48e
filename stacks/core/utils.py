import datetime


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def naive(ts):
    """SQLite hands back naive datetimes; compare everything as naive UTC."""
    if ts is not None and ts.tzinfo is not None:
        return ts.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return ts


def require(**fields):
    """Returns the names of required fields that are missing or blank."""
    return [name for name, value in fields.items()
            if value is None or (isinstance(value, str) and not value.strip())]
