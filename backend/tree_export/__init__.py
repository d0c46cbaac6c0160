"""
家谱树切片导出 - 核心模块

模块结构：
- config/     运行期配置（YAML + 环境变量覆盖）
- models/     数据模型定义（导出任务/切片/进度/场景）
- render/     场景光栅化与DOM切片
- storage/    切片本地持久化（SQLite）
- transport/  合并服务客户端（HTTP / 本地）
- pipeline/   导出编排、上传合并协调、下载
- utils/      定时器（延迟任务/防抖）
- cli.py      命令行入口 tree-export
"""

__version__ = "0.1.0"
