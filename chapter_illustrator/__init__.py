"""
Chapter Illustrator

Builds illustrated chapters for a children's educational magazine: images are
generated with OpenAI DALL-E and Google Gemini (character reference images keep
recurring characters consistent) and chapter pages are rendered from YAML.
"""

__version__ = "1.0.0"
