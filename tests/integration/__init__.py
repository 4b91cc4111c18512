"""HTTP 集成测试"""
