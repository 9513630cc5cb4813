import json


def drain_frames(stream) -> list:
    """Pop every frame queued on an EventStream without waiting."""
    frames = []
    while not stream._queue.empty():
        frame = stream._queue.get_nowait()
        if frame is not None:
            frames.append(frame)
    return frames


def parse_frame(frame: str):
    """Return (kind, payload) for an event frame, or (None, None) for a comment."""
    if frame.startswith(":"):
        return None, None
    kind = None
    data = None
    for line in frame.strip("\n").split("\n"):
        name, _, value = line.partition(": ")
        if name == "event":
            kind = value
        elif name == "data":
            data = json.loads(value)
    return kind, data


def drain_events(stream) -> list:
    return [parse_frame(frame) for frame in drain_frames(stream) if not frame.startswith(":")]
