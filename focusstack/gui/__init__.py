"""Tkinter front end for focus stacking."""
