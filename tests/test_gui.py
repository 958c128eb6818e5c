from types import SimpleNamespace

import numpy as np
import pytest

pytest.importorskip("tkinter")
pytest.importorskip("PIL.ImageTk")

from focusstack.gui import gui_focus_stacking
from focusstack.gui.gui_focus_stacking import FocusStackingGUI
from focusstack.stacking.pipeline import StackResult


class FakeWidget:
    def __init__(self, state="disabled"):
        self.options = {"state": state}

    def config(self, **kwargs):
        self.options.update(kwargs)


def make_panel(result=None):
    return SimpleNamespace(
        result=result,
        btn_stack=FakeWidget(),
        btn_save=FakeWidget(),
        status_label=FakeWidget(),
    )


@pytest.fixture
def errors_shown(monkeypatch):
    shown = []
    monkeypatch.setattr(gui_focus_stacking.messagebox, "showerror", lambda title, message: shown.append(message))
    return shown


def test_failed_run_keeps_previous_result_saveable(errors_shown):
    image = np.zeros((2, 2, 3), dtype=np.uint8)
    panel = make_panel(StackResult(image, np.zeros((2, 2)), np.zeros((2, 2))))

    FocusStackingGUI._stacking_failed(panel, RuntimeError("boom"))

    assert panel.btn_stack.options["state"] == "normal"
    assert panel.btn_save.options["state"] == "normal"
    assert errors_shown == ["boom"]


def test_failed_first_run_leaves_save_disabled(errors_shown):
    panel = make_panel()

    FocusStackingGUI._stacking_failed(panel, RuntimeError("boom"))

    assert panel.btn_stack.options["state"] == "normal"
    assert panel.btn_save.options["state"] == "disabled"
