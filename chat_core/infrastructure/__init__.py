"""基础设施层：存储与日志。"""
