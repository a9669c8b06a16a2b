import sys
from typing import Any, Callable


class NoOpEventLoop:
    """Stands in for a GUI event loop; nothing here ever blocks."""

    def run(self) -> None:
        pass

    def invoke(self, f: Callable[[], Any]) -> Any:
        return f()

    def schedule_restart(self) -> None:
        pass


def _ignore(*args, **kwargs) -> None:
    return None


class NoOpReplObject:
    """A dummy `repl` object that snippets can configure without affecting anything.

    Settings are stored so they can be read back, printers and transformers are dropped,
    and no window, event loop or output stream is ever touched. Use it to disable
    printers that would otherwise open windows or write to the terminal.
    """

    def __init__(self) -> None:
        self.float_format = ".10g"
        self.format_locale = "C"
        self.print_width = 78
        self.print_depth = 100
        self.print_length = 100
        self.print_size = 10000
        self.show_declaration_values = True
        self.show_properties = True
        self.show_iterables = True
        self.show_dicts = True
        self.added_printers: list[Callable] = []
        self.command_line_args = list(sys.argv)
        self._event_loop = NoOpEventLoop()

    @property
    def event_loop(self) -> NoOpEventLoop:
        return self._event_loop

    @event_loop.setter
    def event_loop(self, loop: Any) -> None:
        pass

    def add_printer(self, printer: Callable[[Any], str]) -> None:
        pass

    def add_print_transformer(self, transformer: Callable[[Any], Any]) -> None:
        pass

    def __getattr__(self, name: str) -> Callable:
        # Only reached for attributes that don't exist
        if name.startswith("__"):
            raise AttributeError(name)
        return _ignore


class TestNoOpReplObject:
    def test_settings_round_trip(self):
        repl = NoOpReplObject()
        assert repl.print_width == 78
        repl.print_width = 120
        repl.float_format = ".3f"
        assert repl.print_width == 120
        assert repl.float_format == ".3f"

    def test_printers_are_ignored(self):
        repl = NoOpReplObject()
        repl.add_printer(lambda value: "printed")
        repl.add_print_transformer(lambda value: value)
        assert repl.added_printers == []

    def test_event_loop_never_blocks(self):
        repl = NoOpReplObject()
        loop = repl.event_loop
        repl.event_loop = object()
        assert repl.event_loop is loop
        assert loop.run() is None
        assert loop.invoke(lambda: 42) == 42
        loop.schedule_restart()

    def test_unknown_members_are_no_ops(self):
        repl = NoOpReplObject()
        assert repl.open_chart_window("title", width=300) is None
        assert repl.command_line_args == list(sys.argv)
