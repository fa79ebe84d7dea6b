"""
兼容入口：从 gemini_proxy.main 导入应用
保留此文件以便使用 uvicorn main:app 启动
"""

from gemini_proxy.main import app, main

if __name__ == "__main__":
    main()
