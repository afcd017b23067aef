from common.fileio import atomic_write_text, atomic_write_yaml, exclusive_lock, load_yaml
from common.text_template import render_template

__all__ = [
    "atomic_write_text",
    "atomic_write_yaml",
    "exclusive_lock",
    "load_yaml",
    "render_template",
]
