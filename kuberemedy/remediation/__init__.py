"""
修复引擎 (Remediation Engine)

问题描述经过有界的 AI 调查、结构化分析、风险/置信度决策、修复命令执行和验证调查，
最终得到一份结构化结果。

```
问题描述 (Issue)
    ↓
只读调查 (Read-only Investigation, InvestigationDriver + kubectl 工具)
    ↓
解析与校验分析 (ResponseParser → Analysis)
    ↓
执行决策 (safety.decide)
    ↓
执行修复命令 (CommandExecutor，失败不中断)
    ↓
验证调查 (单层 Validation Pass)
```

## 核心组件 (Core Components)

- **RemediationOrchestrator**: 顶层状态机
- **InvestigationDriver**: AI 工具调用循环
- **KubectlToolExecutor**: 只读 kubectl 诊断工具
- **ResponseParser**: 从 AI 文本中提取并校验分析
- **CommandExecutor**: 顺序执行修复命令
- **SessionStore**: 会话持久化（文件 / 内存）
"""
