# AccessHub - Core Modules
# Identity store, tool registry, access workflow, authorization and audit.
# Services are imported from their modules (core.workflow, core.identity, ...)
# so that models.database can load core.config without a cycle.
