"""
Integrations with external systems the trigger processor mutates.
"""
