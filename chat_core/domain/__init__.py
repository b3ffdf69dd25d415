"""会话领域：Turn 记录、消息存储协议、推理请求模型与业务异常。"""
