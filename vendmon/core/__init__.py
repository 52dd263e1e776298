"""
核心模块包 (Core Module Package)

vendmon 的基础设施：配置管理、数据库连接与事务作用域、异常与全局异常处理器、
可注入时钟、任务调度器、有效期缓存以及管道组件装配。

Infrastructure for vendmon: configuration, database connections and transactional
scopes, exceptions and global handlers, the injectable clock, the job scheduler,
the TTL cache and pipeline component wiring.
"""
