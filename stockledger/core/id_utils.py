import shortuuid


def generate_shortuuid() -> str:
    return shortuuid.uuid()


def generate_event_id() -> str:
    return f"se_{shortuuid.uuid()}"
