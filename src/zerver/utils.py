from rich.console import Console

# Configure console to handle encoding errors gracefully on Windows
console = Console(legacy_windows=False)
# Log lines go to stderr so they never mix with the server's stdout
err_console = Console(stderr=True, legacy_windows=False)
