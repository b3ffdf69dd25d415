"""对外接口：函数式 service 与 FastAPI 路由。"""
