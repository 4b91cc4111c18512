"""
测试模块

测试结构:
- test_*.py: 核心组件的单元测试
- integration/: 基于 TestClient 的 HTTP 集成测试
"""
