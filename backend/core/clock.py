from datetime import datetime


def get_now() -> datetime:
    """Request clock. Routes depend on this instead of reading the system time."""
    return datetime.now().replace(second=0, microsecond=0)
