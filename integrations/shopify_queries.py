"""
GraphQL documents and REST paths used against the Shopify Admin API.
"""

# Disjunctive barcode search. The query string is built by
# utils.barcode_utils.build_barcode_query; matching is exact on the server.
VARIANTS_BY_BARCODE = """
query VariantsByBarcode($query: String!, $first: Int!, $after: String) {
  productVariants(first: $first, query: $query, after: $after) {
    edges {
      node {
        id
        barcode
        title
        inventoryItem {
          id
        }
        product {
          id
          title
        }
      }
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""

# Variants returned per batched search (Shopify's connection maximum)
SEARCH_PAGE_SIZE = 250

# Pages followed per batched search before giving up on the batch
SEARCH_MAX_PAGES = 20

LOCATIONS_PATH = "/locations.json"
PRODUCTS_PATH = "/products.json"
PRODUCT_PATH = "/products/{product_id}.json"
VARIANT_PATH = "/variants/{variant_id}.json"
INVENTORY_LEVELS_PATH = "/inventory_levels.json"
INVENTORY_SET_PATH = "/inventory_levels/set.json"
GRAPHQL_PATH = "/graphql.json"

PRODUCT_LIST_FIELDS = "id,title,variants"
