import time


def now() -> float:
    """Wall-clock seconds since the epoch.

    Not monotonic: a system clock adjustment during a move shifts every
    deadline derived from it.
    """
    return time.time()


def sleep(interval: float) -> None:
    # Negative, NaN or out-of-range intervals are a no-op; early wake-ups are not retried.
    if not interval >= 0:
        return
    try:
        time.sleep(interval)
    except OverflowError:
        return


def color_text(text, color_code):
    return f"\033[{color_code}m{text}\033[0m"

def info_text(text):
    return f"{color_text('INFO', '32')}  {text}"
