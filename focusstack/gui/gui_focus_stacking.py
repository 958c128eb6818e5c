"""Tkinter GUI for depth-map based focus stacking.

The stacking itself runs on a `StackingWorker` thread. Progress, intermediate
previews and the final composite are marshalled back onto the Tk thread with
`root.after(0, ...)`; the Stack button stays disabled while a run is active.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import cv2
import numpy as np
import tkinter as tk
from tkinter import filedialog, messagebox, ttk
from PIL import Image, ImageTk

from focusstack.settings import SettingsFormatError, StackingParams, load_stacking_params, save_params
from focusstack.stacking.cli_main import save_image
from focusstack.stacking.errors import FocusStackError
from focusstack.stacking.pipeline import StackingWorker, StackResult
from focusstack.stacking.preprocess import check_same_size, load_image_stack
from focusstack.stacking.reporting import Reporter

logger = logging.getLogger(__name__)

IMAGE_FILETYPES = [("Images", "*.png *.bmp *.jpg *.jpeg *.tif *.tiff")]


class TkReporter(Reporter):
    """Forwards worker notifications to the GUI on the Tk thread."""

    def __init__(self, gui: "FocusStackingGUI") -> None:
        self.gui = gui

    def on_progress(self, label: str, value: int, maximum: int) -> None:
        self.gui.root.after(0, lambda: self.gui._show_progress(label, value, maximum))

    def on_preview(self, image: np.ndarray, is_float_grayscale: bool = False) -> None:
        self.gui.root.after(0, lambda: self.gui._show_image(self.gui.render_label, image))

    def on_complete(self, result: StackResult) -> None:
        self.gui.root.after(0, lambda: self.gui._stacking_complete(result))

    def on_error(self, exc: BaseException) -> None:
        self.gui.root.after(0, lambda: self.gui._stacking_failed(exc))


class FocusStackingGUI:
    """Focus stacking GUI that can be embedded into another Tkinter container."""

    def __init__(self, root: tk.Tk, *, parent: Optional[tk.Misc] = None) -> None:
        self.root = root
        self.parent: tk.Misc = parent or root

        self.layer_paths: list[str] = []
        self.result: Optional[StackResult] = None
        self.worker = StackingWorker()

        self._build_widgets()
        self._apply_params(StackingParams())

    # -------------------------
    # UI construction
    # -------------------------

    def _build_widgets(self) -> None:
        # 1. Layer Selection
        frame_select = ttk.LabelFrame(self.parent, text="1. Select Layers")
        frame_select.pack(fill="x", padx=10, pady=5)

        ttk.Button(frame_select, text="Open images...", command=self._open_files).pack(anchor="w", padx=10, pady=5)
        self.layers_list = tk.Listbox(frame_select, height=6)
        self.layers_list.pack(fill="x", padx=10, pady=5)
        self.layers_list.bind("<<ListboxSelect>>", self._on_layer_selected)

        # 2. Stacking Settings
        frame_settings = ttk.LabelFrame(self.parent, text="2. Stacking Settings")
        frame_settings.pack(fill="x", padx=10, pady=5)

        self.laplace_var = tk.IntVar()
        self.smooth_kernel_var = tk.IntVar()
        self.smooth_strength_var = tk.DoubleVar()
        self.smooth_iterations_var = tk.IntVar()
        self.blend_var = tk.BooleanVar()

        # Kernel sizes step by two so they stay odd.
        rows = [
            ("Laplacian kernel size:", self.laplace_var, 1, 99, 2),
            ("Smooth kernel size:", self.smooth_kernel_var, 1, 99, 2),
            ("Smooth strength:", self.smooth_strength_var, 1, 500, 1),
            ("Smooth iterations:", self.smooth_iterations_var, 0, 50, 1),
        ]
        for row, (text, var, lo, hi, step) in enumerate(rows):
            ttk.Label(frame_settings, text=text).grid(row=row, column=0, padx=10, pady=3, sticky="w")
            ttk.Spinbox(frame_settings, from_=lo, to=hi, increment=step, textvariable=var, width=8).grid(
                row=row, column=1, padx=10, pady=3, sticky="w"
            )
        ttk.Checkbutton(frame_settings, text="Blend layers", variable=self.blend_var).grid(
            row=len(rows), column=0, columnspan=2, padx=10, pady=3, sticky="w"
        )

        frame_params = ttk.Frame(frame_settings)
        frame_params.grid(row=len(rows) + 1, column=0, columnspan=2, sticky="w", padx=5, pady=5)
        ttk.Button(frame_params, text="Save parameters", command=self._save_params).pack(side="left", padx=5)
        ttk.Button(frame_params, text="Load parameters", command=self._load_params).pack(side="left", padx=5)
        ttk.Button(frame_params, text="Restore defaults", command=lambda: self._apply_params(StackingParams())).pack(
            side="left", padx=5
        )

        # 3. Actions & Progress
        frame_action = ttk.Frame(self.parent)
        frame_action.pack(fill="x", padx=10, pady=10)

        self.btn_stack = ttk.Button(frame_action, text="Stack images", command=self._start_stacking)
        self.btn_stack.pack(fill="x", pady=5)

        frame_save = ttk.Frame(frame_action)
        frame_save.pack(fill="x", pady=5)
        self.btn_save = ttk.Button(frame_save, text="Save result", command=self._save_result, state="disabled")
        self.btn_save.pack(side="left", fill="x", expand=True)
        ttk.Label(frame_save, text="Quality:").pack(side="left", padx=5)
        self.quality_var = tk.IntVar(value=95)
        ttk.Spinbox(frame_save, from_=0, to=100, textvariable=self.quality_var, width=5).pack(side="left")

        self.progress_var = tk.DoubleVar()
        self.progress_bar = ttk.Progressbar(frame_action, variable=self.progress_var, maximum=100)
        self.progress_bar.pack(fill="x", pady=5)

        self.status_label = ttk.Label(frame_action, text="Ready")
        self.status_label.pack()

        # 4. Image Display Area
        display_frame = ttk.Notebook(self.parent)
        display_frame.pack(expand=True, fill="both", padx=10, pady=10)
        self.display_frame = display_frame

        self.preview_label = ttk.Label(display_frame, text="(Select a layer to preview)", anchor="center")
        self.result_label = ttk.Label(display_frame, text="(Result will appear after stacking)", anchor="center")
        self.render_label = ttk.Label(display_frame, text="", anchor="center")
        display_frame.add(self.preview_label, text="Layer")
        display_frame.add(self.result_label, text="Result")
        display_frame.add(self.render_label, text="Progress")

    # -------------------------
    # Parameters
    # -------------------------

    def _apply_params(self, params: StackingParams) -> None:
        self.laplace_var.set(params.laplace_kernel_size)
        self.smooth_kernel_var.set(params.smooth_kernel_size)
        self.smooth_strength_var.set(params.smooth_strength)
        self.smooth_iterations_var.set(params.smooth_iterations)
        self.blend_var.set(params.blend_layers)

    def _current_params(self) -> StackingParams:
        return StackingParams(
            laplace_kernel_size=int(self.laplace_var.get()),
            smooth_kernel_size=int(self.smooth_kernel_var.get()),
            smooth_strength=float(self.smooth_strength_var.get()),
            smooth_iterations=int(self.smooth_iterations_var.get()),
            blend_layers=bool(self.blend_var.get()),
        ).validated()

    def _save_params(self) -> None:
        out_path = filedialog.asksaveasfilename(
            defaultextension=".param", filetypes=[("Parameters", "*.param")], title="Save Parameters"
        )
        if not out_path:
            return
        try:
            save_params(out_path, self._current_params())
        except (OSError, ValueError, tk.TclError) as exc:
            messagebox.showerror("Save failed", str(exc))
            return
        messagebox.showinfo("Success", "Parameters saved.")

    def _load_params(self) -> None:
        in_path = filedialog.askopenfilename(filetypes=[("Parameters", "*.param")], title="Load Parameters")
        if not in_path:
            return
        try:
            params = load_stacking_params(in_path)
        except (OSError, SettingsFormatError) as exc:
            logger.error("Could not load parameters from %s: %s", in_path, exc)
            messagebox.showwarning("Error", "Could not load parameters.")
            return
        self._apply_params(params)
        messagebox.showinfo("Success", "Parameters loaded.")

    # -------------------------
    # UI callbacks
    # -------------------------

    def _open_files(self) -> None:
        file_names = filedialog.askopenfilenames(title="Select one or more files to open", filetypes=IMAGE_FILETYPES)
        if not file_names:
            return
        self.layer_paths = list(file_names)
        self.layers_list.delete(0, "end")
        for file_name in self.layer_paths:
            self.layers_list.insert("end", Path(file_name).name)

    def _on_layer_selected(self, _event: object) -> None:
        selection = self.layers_list.curselection()
        if not selection:
            return
        image = cv2.imread(self.layer_paths[selection[0]], cv2.IMREAD_COLOR)
        if image is None:
            self.preview_label.config(image="", text="Could not read image")
            return
        self.display_frame.select(self.preview_label)
        self._show_image(self.preview_label, image)

    def _start_stacking(self) -> None:
        if not self.layer_paths:
            messagebox.showwarning("Error", "No images to stack")
            return
        try:
            params = self._current_params()
            images = load_image_stack(self.layer_paths)
            check_same_size(images)
        except FocusStackError as exc:
            messagebox.showwarning("Error", str(exc))
            return
        except (FileNotFoundError, ValueError, tk.TclError) as exc:
            messagebox.showerror("Error", str(exc))
            return

        self._apply_params(params)
        self.btn_stack.config(state="disabled")
        self.btn_save.config(state="disabled")
        self.progress_var.set(0)
        self.status_label.config(text="Starting...")
        self.display_frame.select(self.render_label)

        self.worker.submit(images, reporter=TkReporter(self), **params.as_kwargs())

    def _show_progress(self, label: str, value: int, maximum: int) -> None:
        self.progress_bar.config(maximum=max(maximum, 1))
        self.progress_var.set(value)
        self.status_label.config(text=f"{label} {value}/{maximum}")

    def _stacking_complete(self, result: StackResult) -> None:
        self.result = result
        self.btn_stack.config(state="normal")
        self.btn_save.config(state="normal")
        self.display_frame.select(self.result_label)
        self._show_image(self.result_label, result.composite)

        if result.warnings:
            self.status_label.config(text=f"Done ({len(result.warnings)} layer(s) skipped)")
            messagebox.showwarning("Alignment", "\n".join(str(w) for w in result.warnings))
        else:
            self.status_label.config(text="Done")

    def _stacking_failed(self, exc: BaseException) -> None:
        self.btn_stack.config(state="normal")
        if self.result is not None:
            self.btn_save.config(state="normal")
        self.status_label.config(text="Error occurred")
        messagebox.showerror("Error", str(exc))

    # -------------------------
    # Rendering / saving
    # -------------------------

    def _show_image(self, label: ttk.Label, image: np.ndarray) -> None:
        """Render a BGR or grayscale array into `label`, scaled to fit."""
        max_w = max(1, (self.display_frame.winfo_width() or 1) - 20)
        max_h = max(1, (self.display_frame.winfo_height() or 1) - 40)
        if max_w <= 1 or max_h <= 1:
            max_w, max_h = 800, 500

        if image.ndim == 2:
            rgb = cv2.cvtColor(image.astype(np.uint8), cv2.COLOR_GRAY2RGB)
        else:
            rgb = cv2.cvtColor(image.astype(np.uint8), cv2.COLOR_BGR2RGB)

        h, w = rgb.shape[:2]
        scale = min(1.0, float(max_w) / float(max(w, 1)), float(max_h) / float(max(h, 1)))
        if scale < 1.0:
            new_size = (max(1, int(round(w * scale))), max(1, int(round(h * scale))))
            rgb = cv2.resize(rgb, new_size, interpolation=cv2.INTER_AREA)

        img_tk = ImageTk.PhotoImage(Image.fromarray(rgb))
        label.config(image=img_tk, text="")
        label.image = img_tk  # type: ignore[attr-defined]

    def _save_result(self) -> None:
        if self.result is None:
            messagebox.showwarning("Error", "No image to save.")
            return

        out_path = filedialog.asksaveasfilename(
            initialfile="stacked-image.png",
            defaultextension=".png",
            filetypes=[("PNG Image", "*.png"), ("JPEG Image", "*.jpg")],
            title="Save Image",
        )
        if not out_path:
            return

        try:
            save_image(Path(out_path), self.result.composite, int(self.quality_var.get()))
            self.status_label.config(text=f"Saved: {Path(out_path).name}")
        except (OSError, tk.TclError) as exc:
            messagebox.showerror("Save failed", str(exc))


if __name__ == "__main__":
    root = tk.Tk()
    root.title("Focus Stacking GUI")
    root.geometry("900x1000")
    FocusStackingGUI(root)
    root.mainloop()
