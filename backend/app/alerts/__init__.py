"""
alerts — Emergency alert lifecycle.

Sub-modules:
    orchestrator  — trigger / end: recorders, position and safe places together
    notifier      — in-process event stream for the presentation layer
    models        — AlertSession context, notices, emergency contacts
"""
