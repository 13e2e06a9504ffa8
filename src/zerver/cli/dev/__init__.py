"""Dev-mode supervision for zerver: child process, change watcher and console."""
