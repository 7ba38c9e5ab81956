"""Built-in GraphQL documents, used when no captured operation is available.

Operation names match the ones the web application itself sends, so a
captured recon log can override any of them one-for-one.
"""

SESSION_USER = "ApiGetSessionUser"
OPEN_JOBS = "ApiOpenJobs"
ACTIVE_APPLICATIONS = "ApiGetActiveApplications"
APPLICATION_DETAIL = "ApiApplication"

SESSION_USER_QUERY = """
query ApiGetSessionUser {
  user: sessionUserV2 {
    id
    organizationId
    organizationName
    __typename
  }
}
"""

OPEN_JOBS_QUERY = """
query ApiOpenJobs($onlyIncludeOpenJobs: Boolean = true, $onlyIncludeJobsUserFollowsOrHasRole: Boolean = false) {
  jobsPipelines(
    onlyIncludeOpenJobs: $onlyIncludeOpenJobs
    onlyIncludeJobsUserFollowsOrHasRole: $onlyIncludeJobsUserFollowsOrHasRole
  ) {
    jobId
    jobTitle
    jobLocationName
    customRequisitionId
    confidential
    userFollowsOrHasRole
    applicationCount
    __typename
  }
}
"""

ACTIVE_APPLICATIONS_QUERY = """
query ApiGetActiveApplications($customFilter: JSON, $extraFields: [String], $orderByFields: [OrderByFieldInput], $cursor: String, $searchTerm: String, $queryContext: JSON, $limit: Int) {
  result: applicationsByPrebuiltView(
    prebuiltView: Active
    customFilter: $customFilter
    extraFields: $extraFields
    orderByFields: $orderByFields
    cursor: $cursor
    searchTerm: $searchTerm
    queryContext: $queryContext
    limit: $limit
  ) {
    results {
      id
      job { id title __typename }
      candidate {
        id
        name
        company
        socialLinks { type url __typename }
        isBlinded
        __typename
      }
      source { id title __typename }
      creditedToUser { id firstName lastName email __typename }
      applicationStatus { description priority dueAt __typename }
      createdAt
      currentInterviewStage { id title interviewPlanId stageType __typename }
      extraFields
      __typename
    }
    nextCursor
    moreDataAvailable
    opaqueFilter
    __typename
  }
}
"""

APPLICATION_DETAIL_QUERY = """
query ApiApplication($applicationId: UUID!) {
  application(id: $applicationId) {
    id
    applicationStatus { description priority dueAt __typename }
    currentInterviewStage { id title stageType __typename }
    interviewPlan {
      id
      interviewStages { id title stageType __typename }
      __typename
    }
    job {
      id
      title
      interviewPlansWithActivities {
        id
        isDefault
        interviewPlan {
          id
          interviewStages { id title stageType __typename }
          __typename
        }
        __typename
      }
      __typename
    }
    interviewEvents {
      id
      startTime
      endTime
      interview { id title __typename }
      interviewerEvents {
        id
        interviewer { id firstName lastName email __typename }
        isFeedbackSubmitted
        scorecardSubmission {
          id
          overallRecommendation
          submittedAt
          submittedFormRender
          __typename
        }
        __typename
      }
      __typename
    }
    __typename
  }
}
"""

# name -> (document, declared variables with defaults)
BUILTIN_OPERATIONS: dict[str, tuple[str, dict[str, object]]] = {
    SESSION_USER: (SESSION_USER_QUERY, {}),
    OPEN_JOBS: (
        OPEN_JOBS_QUERY,
        {"onlyIncludeOpenJobs": True, "onlyIncludeJobsUserFollowsOrHasRole": False},
    ),
    ACTIVE_APPLICATIONS: (
        ACTIVE_APPLICATIONS_QUERY,
        {
            "customFilter": None,
            "extraFields": [],
            "orderByFields": [{"field": "submitted_at", "ascending": False}],
            "cursor": None,
            "searchTerm": "",
            "queryContext": None,
            "limit": 100,
        },
    ),
    APPLICATION_DETAIL: (APPLICATION_DETAIL_QUERY, {"applicationId": None}),
}
