"""
Configuration module for Flow Runner.
Loads settings from environment variables or .env file.
Flow Runner 配置模块。
从环境变量或 .env 文件加载所有配置项。
"""

import os
from dotenv import load_dotenv

load_dotenv()  # 自动读取项目根目录的 .env 文件（若存在），优先级低于系统环境变量

# --- Simulated Node Executor ---
# --- 模拟节点执行器 ---
NODE_MIN_DELAY = float(os.getenv("NODE_MIN_DELAY", "3.0"))        # 模拟执行的最短耗时（秒）
NODE_MAX_DELAY = float(os.getenv("NODE_MAX_DELAY", "5.0"))        # 模拟执行的最长耗时（秒）
NODE_FAILURE_RATE = float(os.getenv("NODE_FAILURE_RATE", "0.1"))  # 随机失败概率 0~1

# --- Scheduler ---
# --- 调度器 ---
REJECT_CYCLES = os.getenv("REJECT_CYCLES", "true").lower() == "true"  # 提交时是否拒绝含环的图

# --- Run Store ---
# --- 运行记录存储 ---
RUN_RETENTION_SECONDS = float(os.getenv("RUN_RETENTION_SECONDS", "3600"))          # 运行记录保留时长，超过后由清理任务删除
RUN_STORE_DIR = os.path.expanduser(os.getenv("RUN_STORE_DIR", "~/.flow_runner/runs"))  # JSON 文件存储目录

# --- Status Observer ---
# --- 状态轮询 ---
POLL_INITIAL_DELAY = float(os.getenv("POLL_INITIAL_DELAY", "0.5"))        # 首次查询前的等待时间（秒）
POLL_INITIAL_INTERVAL = float(os.getenv("POLL_INITIAL_INTERVAL", "1.0"))  # 初始轮询间隔（秒）
POLL_MAX_INTERVAL = float(os.getenv("POLL_MAX_INTERVAL", "5.0"))          # 轮询间隔上限（秒）
POLL_BACKOFF = float(os.getenv("POLL_BACKOFF", "1.5"))                    # 每次轮询后间隔的放大倍数
POLL_MAX_ERRORS = int(os.getenv("POLL_MAX_ERRORS", "5"))                  # 连续传输错误达到此次数后停止轮询
