"""Domain services: mapping store, event translator, bridge orchestrator.

Modules are imported directly; nothing is re-exported here.
"""
