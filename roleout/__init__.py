"""
RoleOut - SillyTavern Export Toolkit

Exports characters, chats and personas from a running SillyTavern instance
into portable archives, embedding persona metadata in PNG tEXt chunks.
"""

__version__ = "0.1.0"
