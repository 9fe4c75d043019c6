# MasterPlan Production Planning - Web Backend
