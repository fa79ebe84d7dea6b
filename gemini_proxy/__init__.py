"""
Gemini OpenAI 兼容代理
"""
__version__ = '1.0.0'
