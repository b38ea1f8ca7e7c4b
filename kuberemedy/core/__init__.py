"""
核心模块包 (Core Module Package)

配置管理、异常体系、日志初始化等基础组件，为修复引擎和对外接口提供基础设施支持。

Configuration management, exception taxonomy and logging bootstrap shared by the
remediation engine and its outer surfaces.
"""
