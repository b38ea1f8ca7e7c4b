"""
kube-remedy：AI 驱动的 Kubernetes 故障诊断与修复引擎。

AI-driven Kubernetes issue investigation and remediation engine.
"""

__version__ = "0.1.0"
