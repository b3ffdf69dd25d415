"""对话编排：上下文组装与 ChatOrchestrator。"""
