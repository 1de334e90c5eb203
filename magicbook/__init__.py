"""
magicbook: personalized illustrated storybooks from a photo and a few story choices.
"""

__version__ = "0.1.0"
