"""
Notepath
Turns a body of interlinked notes into an ordered curriculum that leads
to a chosen goal note, flagging knowledge gaps along the way.
"""

__version__ = "0.1.0"
