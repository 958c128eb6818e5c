"""Depth-map based focus stacking.

Fuses a focus-bracketed series of photographs of the same scene into a single
image that is sharp everywhere:

- `focusstack.stacking`: alignment, sharpness, depth map and compositing
- `focusstack.gui`: Tkinter front end
- `focusstack.settings`: stacking parameters and the `.param` file format
"""

__version__ = "1.0.0"
