"""python -m gemini_proxy"""
from gemini_proxy.main import main

main()
