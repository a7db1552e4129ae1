# Execution Domain
#
# Matches queued jobs to free units, hands them to an executor
# (simulated or AWS Batch) and applies the executor's terminal reports.
