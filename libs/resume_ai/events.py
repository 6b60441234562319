TAILOR_JOB_STREAM = "tailor.jobs"
TAILOR_JOB_GROUP = "tailor-workers"

JOB_EVENTS = ["tailor.job_created"]
