"""
GraphQL documents sent to the ledger gateway.

All queries sort by ledger height, newest first.
"""

TRANSACTION_FIELDS = """
      pageInfo {
        hasNextPage
      }
      edges {
        cursor
        node {
          id
          tags {
            name
            value
          }
          owner {
            address
            key
          }
        }
      }
"""

FIND_BY_TAGS = (
    """
query FIND_BY_TAGS($tags: [TagFilter!], $first: Int!, $after: String) {
  transactions(tags: $tags, first: $first, after: $after, sort: HEIGHT_DESC) {"""
    + TRANSACTION_FIELDS
    + """  }
}
"""
)

FIND_BY_TAGS_WITH_OWNERS = (
    """
query FIND_BY_TAGS_WITH_OWNERS($owners: [String!], $tags: [TagFilter!], $first: Int!, $after: String) {
  transactions(owners: $owners, tags: $tags, first: $first, after: $after, sort: HEIGHT_DESC) {"""
    + TRANSACTION_FIELDS
    + """  }
}
"""
)

QUERY_TX_BY_IDS = (
    """
query QUERY_TX_BY_IDS($ids: [ID!], $tags: [TagFilter!], $first: Int!, $after: String) {
  transactions(ids: $ids, tags: $tags, first: $first, after: $after, sort: HEIGHT_DESC) {"""
    + TRANSACTION_FIELDS
    + """  }
}
"""
)


def select_query(owners=None, ids=None) -> str:
    """Pick the document matching the variables in use"""
    if ids:
        return QUERY_TX_BY_IDS
    if owners:
        return FIND_BY_TAGS_WITH_OWNERS
    return FIND_BY_TAGS
