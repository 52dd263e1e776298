"""
vendmon 路由模块包 (vendmon Router Module Package)

本包包含 vendmon 的全部 HTTP 路由，按功能域组织。接口本身不做认证，由宿主应用负责。

路由模块组织结构 (Router Module Organization):

=== 仪表盘数据路由 (Dashboard Data Routes) ===
- performance.py: 性能数据（区间快照、统计、最近 24 小时、小时/日汇总、单日摘要、时间段对比）
- recommendations.py: 性能建议（全部建议、按类型、critical、统计、强制刷新）

=== 告警路由 (Alert Routes) ===
- alert_rules.py: 告警规则管理（规则CRUD、升级步骤CRUD、手动测试、按需检查）
- alerts.py: 告警管理（告警查询、确认/解决、通知记录、失败通知重发、检查全部规则）

路由注册:
所有路由模块在 main.py 中通过 app.include_router() 统一注册，
统一使用 /api/v1/ 前缀。
"""
