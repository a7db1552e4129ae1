# Dispatch Domain
#
# Turns arrival events (direct or from S3 notifications) into rendered,
# queued job instances.
