def progress_callback(current: int, total: int):
    """Print progress updates."""
    if total <= 0:
        return
    percent = int(current / total * 100)
    bar_length = 40
    filled = int(bar_length * current / total)
    bar = "█" * filled + "░" * (bar_length - filled)
    print(f"\r  [{bar}] {percent}% ({current}/{total})", end="", flush=True)
