from error_triage.locator.filesystem import CodeLocator, FilesystemLocator, locate_frames

__all__ = ["CodeLocator", "FilesystemLocator", "locate_frames"]
