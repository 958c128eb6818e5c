"""Desktop entry point for focus stacking.

Run with `focusstack-gui` or `python -m focusstack.gui.gui`.
"""

from __future__ import annotations

import tkinter as tk

from focusstack.gui.gui_focus_stacking import FocusStackingGUI
from focusstack.logging_setup import default_log_file, setup_logging


def main() -> None:
    setup_logging(log_file=default_log_file())

    root = tk.Tk()
    root.title("Focus Stacking")
    root.geometry("980x1040")

    FocusStackingGUI(root)

    root.mainloop()


if __name__ == "__main__":
    main()
