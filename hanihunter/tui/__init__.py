"""Text progress display for downloads."""