"""
Output module - Result output formatters

Contains formatters for different output formats:
- JSON
- Text (human-readable VM overview)
- Connectivity test summary
"""

from .formatters import to_json, registry_to_text, format_report

__all__ = ['to_json', 'registry_to_text', 'format_report']
