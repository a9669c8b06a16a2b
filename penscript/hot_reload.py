import time
from pathlib import Path
from typing import Callable

from watchdog.events import FileModifiedEvent, FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from penscript.literate import DocumentEvaluationError


class RebuildEventHandler(FileSystemEventHandler):
    def __init__(self, watched_files: list[Path], rebuild: Callable[[], None]) -> None:
        super().__init__()
        self.watched_files = {path.resolve() for path in watched_files}
        self.rebuild = rebuild

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory or Path(event.src_path).resolve() not in self.watched_files:
            return
        print(f"Rendering in response to {event}...")
        try:
            self.rebuild()
        except (DocumentEvaluationError, ValueError, RuntimeError) as e:
            # Keep watching; the next save may fix it
            print(f"Failed to render: {e}")


def watch(watched_files: list[Path], rebuild: Callable[[], None]) -> None:
    event_handler = RebuildEventHandler(watched_files, rebuild)
    observer = Observer()
    for directory in {path.resolve().parent for path in watched_files}:
        observer.schedule(event_handler, directory.as_posix(), recursive=False)
    observer.start()
    print(f"Watching {', '.join(path.as_posix() for path in watched_files)} for changes...")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        observer.stop()
    observer.join()


class TestRebuildEventHandler:
    def test_rebuilds_only_for_watched_files(self, tmp_path):
        watched = tmp_path / "doc.md"
        rebuilds = []
        handler = RebuildEventHandler([watched], lambda: rebuilds.append(True))
        handler.on_modified(FileModifiedEvent(str(tmp_path / "other.md")))
        handler.on_modified(FileModifiedEvent(str(watched)))
        assert rebuilds == [True]

    def test_render_failures_keep_watching(self, tmp_path, capsys):
        watched = tmp_path / "doc.md"

        def failing_rebuild():
            raise ValueError("Unknown command")

        handler = RebuildEventHandler([watched], failing_rebuild)
        handler.on_modified(FileModifiedEvent(str(watched)))
        assert "Failed to render: Unknown command" in capsys.readouterr().out
