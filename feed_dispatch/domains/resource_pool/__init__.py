# Resource Pool Domain
#
# Worker capacity units between a minimum and maximum vCPU budget,
# scaled toward queued demand.
