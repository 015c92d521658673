"""
Template persistence and template files.
"""

from .template_loader import TemplateLoader, export_templates, load_template_file
from .template_store import InMemoryTemplateStore, TemplateStore, compare_templates

__all__ = [
    "TemplateLoader",
    "export_templates",
    "load_template_file",
    "InMemoryTemplateStore",
    "TemplateStore",
    "compare_templates",
]
